# (line, column) of the source construct a diagnostic is attached to.
Location = tuple[int, int]

NO_LOCATION: Location = (0, 0)
