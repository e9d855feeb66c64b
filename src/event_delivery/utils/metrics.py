"""
Module: metrics.py
Description: CloudWatch custom metrics publishing.

Publishes delivery outcome metrics to CloudWatch for monitoring
terminal deliveries, permanent failures, and failed attempts.

Key Components:
- MetricsClient: CloudWatch metrics client
- put_metric(): Publish individual metrics
- Graceful error handling for metrics failures

Dependencies: boto3, typing, logger
"""

from typing import Dict, Optional

import boto3

from event_delivery.utils.logger import get_logger

logger = get_logger(__name__)


class MetricsClient:
    """CloudWatch metrics client."""

    def __init__(
        self,
        namespace: str = "EventDelivery",
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize metrics client.

        Args:
            namespace: CloudWatch metrics namespace
            region_name: AWS region for the CloudWatch client
            endpoint_url: Optional endpoint override
        """
        self.namespace = namespace
        self.cloudwatch = boto3.client(
            'cloudwatch',
            region_name=region_name,
            endpoint_url=endpoint_url
        )

        logger.info(
            "Metrics client initialized",
            namespace=namespace
        )

    def put_metric(
        self,
        metric_name: str,
        value: float = 1.0,
        unit: str = 'Count',
        dimensions: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Publish a metric to CloudWatch.

        Failures are logged and swallowed so metrics never affect delivery.

        Args:
            metric_name: Name of the metric
            value: Metric value
            unit: Metric unit (Count, Milliseconds, etc.)
            dimensions: Optional metric dimensions

        Returns:
            True if the metric was accepted, False otherwise
        """
        try:
            metric_data = {
                'MetricName': metric_name,
                'Value': value,
                'Unit': unit
            }

            if dimensions:
                metric_data['Dimensions'] = [
                    {'Name': k, 'Value': v}
                    for k, v in dimensions.items()
                ]

            self.cloudwatch.put_metric_data(
                Namespace=self.namespace,
                MetricData=[metric_data]
            )

            logger.debug(
                "Metric published to CloudWatch",
                metric_name=metric_name,
                value=value,
                unit=unit,
                dimensions=dimensions,
                namespace=self.namespace
            )
            return True

        except Exception as e:
            logger.warning(
                "Failed to publish metric",
                metric_name=metric_name,
                value=value,
                error=str(e),
                namespace=self.namespace
            )
            return False
