"""Recommendation module for MatchaRank.

This module contains the interaction store adapter, experiment assignment,
user profile builder, similarity engines and the recommendation generator
that blends collaborative and content-based scores for each user.
"""
