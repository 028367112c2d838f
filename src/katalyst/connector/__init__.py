"""Third-party calendar connector."""
