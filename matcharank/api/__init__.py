"""HTTP API for MatchaRank."""
