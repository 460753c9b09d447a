"""issuescope: watch GitHub issue trackers and act on matching issues."""

__version__ = "0.1.0"
