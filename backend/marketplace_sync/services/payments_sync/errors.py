class IntegrationLoadError(RuntimeError):
    """The active integrations could not be read; the whole run fails."""
