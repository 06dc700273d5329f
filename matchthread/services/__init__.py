"""External services: football data provider, Telegram and publishers."""
