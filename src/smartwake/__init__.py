"""smartwake: wake-window alarm engine for a sensor companion and a controller."""
