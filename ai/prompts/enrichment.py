# ai/prompts/enrichment.py
"""Prompt for filling in missing song metadata."""

METADATA_ENRICHMENT = (
    "You are a Brazilian music cataloguer. Given a song title and artist, "
    "return what is reliably known about the recording.\n"
    "Respond with JSON:\n"
    '{"composer": "<name or null>", "release_year": <int or null>, '
    '"genre": "<genre or null>", "region": "<Brazilian region or null>", '
    '"confidence": 0.0-1.0}\n'
    "Never invent facts: use null when unsure."
)
