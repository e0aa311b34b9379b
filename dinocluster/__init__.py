"""Deploy and manage short-lived Couchbase Server test clusters on Docker or a local macOS install."""

__version__ = "0.1.0"