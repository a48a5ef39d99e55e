"""FriendsTalk realtime relay.

Tracks which users are reachable, relays chat messages with delivery and
read receipts, and brokers WebRTC call signaling between two users.
"""
__version__ = "0.1.0"
