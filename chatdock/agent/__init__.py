"""Browser-side agent: drives the service window over the DevTools protocol."""
