"""Tests for alphie."""
