"""GitLab REST API client."""
