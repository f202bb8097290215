"""Core services: configuration, logging, context resolution, authorization, audit."""
