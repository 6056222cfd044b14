"""Pubsub client and subscriptions, peer monitoring, and direct two-peer channels."""