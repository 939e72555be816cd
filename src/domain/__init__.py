"""
Entity analytics engine: influence scoring, trends and cross-question rollups.
"""
