"""Settings, logging setup and the source tier rule table."""
