"""Course chat context.

The in-memory store lives in `store`; the MongoDB store in `store_mongo` is
imported only when durable stores are enabled.
"""
