from recollect.episode.context import EpisodeContextGenerator
from recollect.episode.detector import EpisodeDetector
from recollect.episode.search import EpisodeSearchService

__all__ = ["EpisodeContextGenerator", "EpisodeDetector", "EpisodeSearchService"]
