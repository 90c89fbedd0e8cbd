"""Monorepo release workflow: changelog derivation, pipelines, propagation and rollback."""
