import logging
import random

import tidepool
import tidepool.osc

logging.basicConfig(level=logging.INFO)

# SuperDirt listens on 57120 by default. Start it in SuperCollider first.
engine = tidepool.Engine(tidepool.osc.OscBackend(latency=0.2), cps=0.55)

# Four on the floor, doubled up every fourth cycle.
engine.sound("bd*4").every(4, lambda p: p.fast(2)).gain(0.9).play()

# Snare on the backbeat, reversed on the 4th cycle of every 8.
engine.sound("~ sn ~ sn").whenmod(8, 3, lambda p: p.rev()).reverb(1.5).play()

# Hats from a generator: busier in the second half of the cycle.
rng = random.Random(7)
engine.sound(lambda t: "hh" if t >= 0.5 or rng.random() < 0.4 else "~").pan(0.4).hpf(3000).play()

# A two-cycle bass line.
bass = engine.sound(engine.sound("superpiano").note("c2 eb2 g2 eb2"))
bass.append(engine.sound("superpiano").note("f2 f2 bb1 c2")).lpf(600).play()

# Claps that sometimes crush.
engine.struct("~ x ~ ~ ~ x ~ x", "cp").sometimes(lambda p: p.crush(4), 0.3).play()

engine.play()
