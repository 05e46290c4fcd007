"""Course analytics collection pipeline.

Pulls activity records from survey, cloud-workspace, video-conferencing and
source-control APIs with pagination and retry, normalizes them into a common
tabular shape, and upserts them into PostgreSQL without duplicates.
"""
