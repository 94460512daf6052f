"""Tests for codegen-orchestrator."""
