"""Short-lived assistant state: conversation memory and search result cache."""
