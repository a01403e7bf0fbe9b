"""Publishing: hosting targets and the single-writer live swap"""

from sitepub.publish.publisher import Publisher
from sitepub.publish.target import HostingTarget, LocalDirectoryTarget

__all__ = ["HostingTarget", "LocalDirectoryTarget", "Publisher"]
