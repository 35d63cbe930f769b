"""
Input preparation: announcement text cleaning and outcome corpus loading.
"""

from .text_cleaner import AnnouncementTextCleaner
from .corpus_loader import CorpusRegistry, load_corpus_file

__all__ = ['AnnouncementTextCleaner', 'CorpusRegistry', 'load_corpus_file']
