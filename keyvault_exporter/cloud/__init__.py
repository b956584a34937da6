"""Azure collaborators: credentials and the resource API client."""
