"""Format detector, structure tables and the PE, ELF and Mach-O parsers."""
