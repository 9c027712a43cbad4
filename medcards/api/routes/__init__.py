from . import batches, cleaning, cloze, essays, sections

__all__ = ["batches", "cleaning", "cloze", "essays", "sections"]
