"""DNS middleware: the handler chain, its registry and the built-in handlers."""