"""
Topic cache: serve Vinted search results for a topic from Postgres and keep
them fresh in the background.
"""
