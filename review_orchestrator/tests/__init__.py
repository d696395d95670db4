"""Tests for Review Orchestrator."""
