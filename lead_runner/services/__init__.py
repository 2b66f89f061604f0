"""Browser-side collaborators: session, credentials, Sales Navigator view, pagination and sidebars."""
