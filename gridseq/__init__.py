"""
gridseq - a step-grid MIDI sequencer for Python.

Toggle cells on a pitch × step grid, hear the loop through any MIDI synth,
and export it as a Standard MIDI File. The grid is compiled once into a
canonical list of note events, and both outputs are built from that list:

- **Live playback.** Events become ``"bar:beat:sixteenth"`` transport times
  in one looping part per track, played by a pulse clock with swing on a
  MIDI output port. Changing tempo, swing, patterns or the mix while
  playing reschedules without losing the playback position.
- **MIDI export.** Events become note-on/note-off pairs at 128 ticks per
  beat, ordered with releases before attacks on the same tick and written
  as delta times.

Minimal example:

    ```python
    import asyncio
    import gridseq

    async def main ():
        studio = gridseq.Studio()
        track = studio.tracks[0]
        for step in (0, 1, 2, 8):
            await studio.toggle_cell(track.id, row=12, step=step)
        await studio.load()
        studio.export_midi("exports")

    asyncio.run(main())
    ```

Package-level exports: ``Studio``, ``Pattern``, ``SequencerEvent``,
``create_empty_pattern``, ``extract_events``.
"""

import gridseq.events
import gridseq.pattern
import gridseq.studio


Studio = gridseq.studio.Studio
Pattern = gridseq.pattern.Pattern
SequencerEvent = gridseq.events.SequencerEvent
create_empty_pattern = gridseq.pattern.create_empty_pattern
extract_events = gridseq.events.extract_events
