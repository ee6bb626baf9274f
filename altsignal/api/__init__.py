"""HTTP query API over the alert engine and collectors."""
