"""
Package: broker
Description: Message broker publishing for the broker delivery channel.
"""

from .sqs import BrokerPublisher, SQSBrokerPublisher

__all__ = ["BrokerPublisher", "SQSBrokerPublisher"]
