"""Application services for the mrel CLI.

Services implement the release workflow, coordinating between the domain
layer (core/) and infrastructure (platform/, git/).
"""
