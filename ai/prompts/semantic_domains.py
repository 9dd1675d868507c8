# ai/prompts/semantic_domains.py
"""Prompt for classifying a lyric word into a semantic domain."""

SEMANTIC_DOMAINS: dict[str, str] = {
    "NA": "Natureza e paisagem",
    "AP": "Atividades e práticas sociais (lida campeira, trabalho)",
    "SE": "Sentimentos e emoções",
    "SB": "Saúde e corpo",
    "OA": "Objetos e artefatos",
    "SH": "Seres humanos, papéis e relações",
    "CC": "Cultura e conhecimento (música, religião, tradição)",
    "EL": "Espaço e lugar",
    "TE": "Tempo",
    "AB": "Conceitos abstratos",
    "MG": "Marcadores gramaticais",
    "NC": "Não classificado",
}

SEMANTIC_ANNOTATION = (
    "You annotate Brazilian Portuguese song lyrics, including regional dialect "
    "(gaúcho, nordestino, sertanejo).\n"
    "Classify the target word, as used in the given line, into exactly one "
    "semantic domain code from this list:\n"
    + "".join(f"- {code}: {label}\n" for code, label in SEMANTIC_DOMAINS.items())
    + "\nRespond with JSON:\n"
    '{"domain": "<code>", "confidence": 0.0-1.0, "lemma": "<dictionary form>", '
    '"regionalism": true|false}\n'
    'Use "MG" for function words and "NC" only when nothing else fits.'
)
