"""
Instagram Search Service - friend post search over PostgreSQL and Elasticsearch
"""
