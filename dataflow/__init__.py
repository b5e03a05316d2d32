"""
Dataflow Layer

Event I/O layer for the bar service. Contains:
- bar_aggregation: Tick to bar aggregation (Bar Store + Aggregator)
- ingestion: Coinbase historical candles and live ticker feed
- query: Chart API
- adapters: NATS client adapters
"""
