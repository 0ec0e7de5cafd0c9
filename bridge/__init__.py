"""GitLab bridge: archive synchronization and staging repositories."""
