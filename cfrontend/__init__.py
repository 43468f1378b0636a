from cfrontend.macroscanner import MacroScanner, LineProvider, TextLineProvider, FileLineProvider, \
    CommentRemovingLineProvider
from cfrontend.parser import CFrontEnd, FrontEndError, DEFAULT_CPP_ARGS
