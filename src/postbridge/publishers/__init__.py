"""Protocol publishers for delivering content items to destinations."""

from postbridge.publishers.activitypub import ActivityPubPublisher
from postbridge.publishers.base import Publisher, PublishResult, build_auth_headers
from postbridge.publishers.drupal import DrupalJsonApiPublisher
from postbridge.publishers.factory import PublisherFactory, create_publisher
from postbridge.publishers.local import LocalFilePublisher, LocalStorePublisher
from postbridge.publishers.micropub import MicropubPublisher
from postbridge.publishers.webhook import WebhookPublisher
from postbridge.publishers.wordpress import WordPressRestPublisher, WordPressXmlRpcPublisher

__all__ = [
    "ActivityPubPublisher",
    "DrupalJsonApiPublisher",
    "LocalFilePublisher",
    "LocalStorePublisher",
    "MicropubPublisher",
    "PublishResult",
    "Publisher",
    "PublisherFactory",
    "WebhookPublisher",
    "WordPressRestPublisher",
    "WordPressXmlRpcPublisher",
    "build_auth_headers",
    "create_publisher",
]
