"""Default engine parameters"""
ENGINE_CONFIG = {
    "max_depth": 200,            # nesting levels before Encode/DecodeError
    "root_marker": "$VAR",       # path expression of the root value
    "anon_package": "Symbol",    # package of generated (anonymous) handles
    "anon_io_name": "__ANONIO__",  # name given to bare stream objects
}
