"""
Prompt builders for each pipeline stage.

Every builder takes the stage input dict and returns (system_prompt, user_prompt).
The structured input is passed inside a <context> block, the same way the
conflict-resolution prompts are built.
"""
import json

ARTICLE_LENGTH_WORDS = {
    'short': 800,
    'medium': 1200,
    'long': 1800,
}

JSON_ONLY = "Respond with a single JSON object only. No markdown, no commentary."

STRICT_RETRY = (
    "Your previous response could not be parsed as JSON: {error}. "
    "Return ONLY a valid JSON object with exactly the keys requested, "
    "starting with '{{' and ending with '}}'."
)


def _context_block(payload: dict) -> str:
    return f"<context>\n{json.dumps(payload, indent=2, ensure_ascii=False, default=str)}\n</context>"


def keyword_research(data: dict):
    system = (
        "You are an SEO strategist. Extract the keywords a business should rank for "
        "from its website, market and brand context. " + JSON_ONLY
    )
    user = (
        f"{_context_block(data)}\n\n"
        f"Target country: {data.get('country', '')}. Language: {data.get('language', '')}.\n"
        "Return {\"keywords\": [{\"keyword\": str, \"intent\": str, \"priority\": int}]} "
        "with 10-20 keywords. Include any seed keywords that fit."
    )
    return system, user


def content_strategy(data: dict):
    system = (
        "You are an SEO content strategist. Turn a keyword set into search terms and "
        "article topics. " + JSON_ONLY
    )
    count = data.get('target_article_count') or 1
    user = (
        f"{_context_block(data)}\n\n"
        "Return {\"search_terms\": [str], \"topics\": [{\"title\": str, \"primary_keyword\": str, "
        f"\"secondary_keywords\": [str], \"intent\": str}}]}} with {count} topic(s) and 3-6 search terms."
    )
    return system, user


def source_discovery(data: dict):
    system = (
        "You are a research assistant. Propose authoritative web pages that cover the "
        "given search terms. " + JSON_ONLY
    )
    max_sources = data.get('max_sources', 9)
    user = (
        f"{_context_block(data)}\n\n"
        f"Return {{\"sources\": [{{\"url\": str, \"title\": str, \"reason\": str}}]}} "
        f"with at most {max_sources} publicly reachable URLs."
    )
    return system, user


def source_analysis(data: dict):
    system = (
        "You analyze a web page for an SEO writer. Summarize what is useful for the "
        "target keywords. " + JSON_ONLY
    )
    user = (
        f"{_context_block(data)}\n\n"
        "Return {\"topics\": [str], \"key_insights\": [str], \"content_angles\": [str], "
        "\"relevance_score\": int between 1 and 10}."
    )
    return system, user


def context_aggregation(data: dict):
    system = (
        "You are a content strategist. Combine brand context, topic and research "
        "insights into one content strategy. " + JSON_ONLY
    )
    user = (
        f"{_context_block(data)}\n\n"
        "Return {\"strategy\": {\"angle\": str, \"audience\": str, \"key_points\": [str], "
        "\"differentiators\": [str], \"citations\": [{\"url\": str, \"insight\": str}]}}."
    )
    return system, user


def writing(data: dict):
    words = ARTICLE_LENGTH_WORDS.get(data.get('article_length'), ARTICLE_LENGTH_WORDS['medium'])
    system = (
        "You are an expert SEO writer. Write a complete, well-structured article in HTML "
        "(h2/h3/p/ul only, no <html> or <body>). " + JSON_ONLY
    )
    user = (
        f"{_context_block(data)}\n\n"
        f"Write about {words} words in {data.get('language', 'English')}.\n"
        "Return {\"title\": str, \"outline\": [{\"heading\": str, \"points\": [str]}], "
        "\"content\": str (HTML), \"meta_description\": str (max 160 chars), \"keywords\": [str]}."
    )
    return system, user


def humanization(data: dict):
    system = (
        "You rewrite AI-drafted articles so they read as written by the brand's own "
        "team. Keep structure, facts and links. " + JSON_ONLY
    )
    user = (
        f"{_context_block(data)}\n\n"
        "First derive the brand voice profile, then rewrite the article content in that voice.\n"
        "Return {\"voice_profile\": {\"tone\": str, \"style_rules\": [str], \"vocabulary\": [str]}, "
        "\"content\": str (HTML)}."
    )
    return system, user


def review(data: dict):
    system = (
        "You are an SEO editor. Review the article for keyword coverage, accuracy and "
        "readability, apply light fixes and return the final version. " + JSON_ONLY
    )
    user = (
        f"{_context_block(data)}\n\n"
        "Return {\"title\": str, \"content\": str (HTML), \"meta_description\": str (max 160 chars), "
        "\"keywords\": [str], \"score\": int between 0 and 100, \"issues\": [str]}."
    )
    return system, user


def meta_description(data: dict):
    system = "You write search-result meta descriptions. " + JSON_ONLY
    user = (
        f"{_context_block(data)}\n\n"
        "Return {\"meta_description\": str} of at most 155 characters that includes the "
        "primary keyword and the brand name when natural."
    )
    return system, user


BUILDERS = {
    'keyword_research': keyword_research,
    'content_strategy': content_strategy,
    'source_discovery': source_discovery,
    'source_analysis': source_analysis,
    'context_aggregation': context_aggregation,
    'writing': writing,
    'humanization': humanization,
    'review': review,
    'meta_description': meta_description,
}


def build_prompts(stage_name: str, data: dict):
    return BUILDERS[stage_name](data)


def strict_retry_prompt(user_prompt: str, previous_response: str, error: str) -> str:
    """User prompt for the single re-prompt after a parse failure."""
    excerpt = (previous_response or '')[:1500]
    return (
        f"{user_prompt}\n\n"
        f"<previous_response>\n{excerpt}\n</previous_response>\n\n"
        + STRICT_RETRY.format(error=error)
    )
