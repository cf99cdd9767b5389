"""Chinese character flashcards: set import, pinyin lookup and shuffled review."""
