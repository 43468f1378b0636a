from anonymousnamer.namer import AnonymousTypeNamer, SEPARATOR
