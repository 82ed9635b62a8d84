"""AlfaFrens channel bot: polling, response generation and fact checking."""
