"""
AI analysis utilities for taste commentary and recommendations.

The model is asked for JSON but replies in free text; everything here treats
that reply as untrusted and degrades to a fixed payload instead of failing.
"""

import json
import re
import time
import logging
from typing import Any, Dict, Optional

import google.generativeai as genai

from errors import MalformedAIResponse
from llm_utils import recommendation_breaker

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'gemini-2.0-flash'

FENCED_BLOCK = re.compile(r'```(?:json)?\s*([\s\S]*?)```')

LIST_FIELDS = ('patterns', 'recommendedArtists', 'recommendedAlbums', 'recommendedGenres')


def log_llm_timing(operation_name):
    """Decorator to log LLM operation timing"""
    def decorator(func):
        def wrapper(*args, **kwargs):
            start_time = time.time()
            logger.info(f"LLM OPERATION START: {operation_name}")
            try:
                result = func(*args, **kwargs)
                duration = time.time() - start_time
                logger.info(f"LLM OPERATION SUCCESS: {operation_name} - Duration: {duration:.2f}s")
                return result
            except Exception as e:
                duration = time.time() - start_time
                logger.error(f"LLM OPERATION FAILED: {operation_name} - Duration: {duration:.2f}s - Error: {str(e)[:200]}")
                raise
        return wrapper
    return decorator


def configure_gemini(api_key):
    """Configure Gemini API with proper error handling"""
    if not api_key:
        logger.error("GEMINI_API_KEY is not set")
        return False
    try:
        genai.configure(api_key=api_key)
        logger.info("Gemini API configured successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to configure Gemini API: {e}")
        return False


def create_fallback_recommendations():
    """Generic payload used whenever the model reply is unusable"""
    return {
        'patterns': ['Based on your listening history'],
        'recommendedTracks': [],
        'recommendedArtists': [],
        'recommendedAlbums': [],
        'recommendedGenres': [],
        'roast': "Your taste is too mysterious to roast right now. Check back later.",
        'personalityReading': "A listener with a story still being written.",
        'energy': None,
    }


def extract_json_from_markdown(text: str) -> str:
    """Strip a ```json fenced wrapper if present, else return the trimmed text"""
    if '```' in text:
        match = FENCED_BLOCK.search(text)
        if match and match.group(1):
            return match.group(1).strip()
    return text.replace('```json', '').replace('```', '').strip()


def _string_list(value, field_name):
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedAIResponse(f"'{field_name}' is not a list")
    return [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def _track_list(value):
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedAIResponse("'recommendedTracks' is not a list")
    tracks = []
    for item in value:
        if isinstance(item, dict) and item.get('name'):
            tracks.append({'name': str(item['name']), 'artist': str(item['artist']) if item.get('artist') else None})
        elif isinstance(item, str) and item.strip():
            tracks.append({'name': item.strip(), 'artist': None})
    return tracks


def _energy(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0, min(100, round(value)))


def parse_recommendations_strict(response_text: str) -> Dict[str, Any]:
    """Parse a model reply, raising MalformedAIResponse on any shape problem"""
    if not isinstance(response_text, str) or not response_text.strip():
        raise MalformedAIResponse("Empty model reply")

    cleaned = extract_json_from_markdown(response_text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedAIResponse(f"Model reply is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedAIResponse("Model reply is not a JSON object")

    parsed = {field: _string_list(data.get(field), field) for field in LIST_FIELDS}
    parsed['recommendedTracks'] = _track_list(data.get('recommendedTracks'))

    fallback = create_fallback_recommendations()
    if not parsed['patterns']:
        parsed['patterns'] = fallback['patterns']
    for text_field in ('roast', 'personalityReading'):
        value = data.get(text_field)
        parsed[text_field] = value.strip() if isinstance(value, str) and value.strip() else fallback[text_field]
    parsed['energy'] = _energy(data.get('energy'))
    return parsed


def parse_recommendations(response_text: str):
    """
    Parse a model reply into the recommendations payload.

    Returns (payload, used_fallback). Never raises: an unparseable reply
    yields the fixed fallback payload.
    """
    try:
        return parse_recommendations_strict(response_text), False
    except MalformedAIResponse as e:
        logger.error(f"Failed to parse Gemini response: {e}")
        logger.debug(f"Raw response was: {str(response_text)[:500]}")
        return create_fallback_recommendations(), True


def create_recommendations_prompt(taste):
    return f"""
As a music expert AI, analyze this user's listening preferences:

Top Artists: {json.dumps(taste['topArtists'])}
Top Tracks: {json.dumps(taste['topTracks'])}

Based on this data:
1. What musical patterns do you notice in their taste?
2. Recommend 5 specific tracks they might enjoy
3. Recommend 5 specific artists they might enjoy that aren't in their top artists
4. Recommend 5 specific albums they might enjoy
5. Suggest 3-5 genres they might like to explore
6. Write a playful one or two sentence roast of their taste
7. Write a short personality reading based on their music
8. Estimate the overall energy of their music from 0 to 100

Return your response as a clean JSON object with these fields only:
{{
  "patterns": ["pattern1", "pattern2"],
  "recommendedTracks": [{{"name": "track name", "artist": "artist name"}}],
  "recommendedArtists": ["artist1", "artist2"],
  "recommendedAlbums": ["album1", "album2"],
  "recommendedGenres": ["genre1", "genre2"],
  "roast": "roast text",
  "personalityReading": "reading text",
  "energy": 50
}}

IMPORTANT: Return ONLY the JSON with no explanations, no backticks, and no markdown formatting.
"""


class GeminiInsightGenerator:
    """Sends a taste summary to Gemini and returns its raw text reply"""

    def __init__(self, api_key, model_name=DEFAULT_MODEL, timeout=30, breaker=recommendation_breaker):
        self.api_key = api_key
        self.model_name = model_name
        self.timeout = timeout
        self.breaker = breaker

    @log_llm_timing("recommendations")
    def _generate(self, prompt):
        if not configure_gemini(self.api_key):
            raise RuntimeError("Gemini API is not configured")
        model = genai.GenerativeModel(self.model_name)
        response = model.generate_content(prompt, request_options={'timeout': self.timeout})
        return response.text

    def generate_text(self, prompt):
        """Raw model reply; transport failures surface as UpstreamUnavailable"""
        return self.breaker.call(self._generate, prompt)

    def generate_recommendations(self, taste):
        """Returns (payload, used_fallback)"""
        reply = self.generate_text(create_recommendations_prompt(taste))
        return parse_recommendations(reply)
