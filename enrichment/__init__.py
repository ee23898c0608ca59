"""
Gemini enrichment: classification of candidates into artifacts,
mention sentiment, and tolerant parsing of model JSON output.
"""
