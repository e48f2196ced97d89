"""HTTP interface for the listing search engine"""
