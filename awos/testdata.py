import random

from .models import format_timestamp, utcnow

WEATHER_DESCRIPTIONS = ["Clear", "Partly Cloudy", "Cloudy", "Windy"]


def generate_test_reading(station_id: str = "VCBI") -> dict:
    """Random but plausible reading, camelCase keys, for exercising the realtime path."""
    return {
        "stationId": station_id,
        "temperature": round(random.uniform(25, 35), 1),
        "humidity": round(random.uniform(50, 90), 1),
        "pressure": round(random.uniform(1010, 1030), 1),
        "windSpeed": round(random.uniform(0, 20), 1),
        "windDirection": random.randrange(360),
        "windGust": round(random.uniform(0, 25), 1),
        "weatherDescription": random.choice(WEATHER_DESCRIPTIONS),
        "dataQuality": "good",
        "timestamp": format_timestamp(utcnow()),
    }
