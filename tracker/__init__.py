"""Project tracker core: persistence, authorization and task numbering."""
