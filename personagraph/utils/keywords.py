"""
Keyword extraction for graph lookups.
"""

import re
from typing import List

# English stop words; a query made only of these carries no graph signal
STOP_WORDS = frozenset({
    'a', 'about', 'above', 'after', 'again', 'against', 'all', 'am', 'an', 'and', 'any', 'are', 'as', 'at', 'be',
    'because', 'been', 'before', 'being', 'below', 'between', 'both', 'but', 'by', 'can', 'could', 'did', 'do', 'does',
    'doing', 'down', 'during', 'each', 'either', 'else', 'ever', 'few', 'for', 'from', 'further', 'had', 'has', 'have',
    'having', 'he', 'her', 'here', 'hers', 'herself', 'him', 'himself', 'his', 'how', 'i', 'if', 'in', 'into', 'is', 'it',
    'its', 'itself', 'just', 'let', 'like', 'may', 'me', 'might', 'more', 'most', 'must', 'my', 'myself', 'no', 'nor',
    'not', 'now', 'of', 'off', 'on', 'once', 'only', 'or', 'other', 'ought', 'our', 'ours', 'ourselves', 'out', 'over',
    'own', 'same', 'shall', 'she', 'should', 'so', 'some', 'such', 'than', 'that', 'the', 'their', 'theirs', 'them',
    'themselves', 'then', 'there', 'these', 'they', 'this', 'those', 'through', 'to', 'too', 'under', 'until', 'up',
    'upon', 'us', 'very', 'was', 'we', 'were', 'what', 'when', 'where', 'which', 'while', 'who', 'whom', 'whose', 'why',
    'will', 'with', 'would', 'yet', 'you', 'your', 'yours', 'yourself', 'yourselves', 's', 't', 'd', 'll', 're', 've'
})

_NON_WORD = re.compile(r'[^\w\s]')


def extract_keywords(statement: str) -> List[str]:
    """
    Lower-case, strip punctuation, tokenize and drop stop words.

    Args:
        statement: Free-text query

    Returns:
        Keywords in query order, duplicates removed
    """
    if not statement:
        return []

    words = _NON_WORD.sub(' ', statement.lower()).split()

    keywords = []
    for word in words:
        if word not in STOP_WORDS and word not in keywords:
            keywords.append(word)
    return keywords
