"""Integration orchestration for GitHub-hosted programming courses."""
